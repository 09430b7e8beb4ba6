import unittest

from blue_balance.utils import (
    extract_action,
    is_valid_clock,
    parse_clock,
    parse_settings_request,
    pick_fallback_tip,
    sanitize_response,
)


class ClockTests(unittest.TestCase):
    def test_parse_clock(self):
        self.assertEqual(parse_clock("07:30"), (7, 30))
        self.assertEqual(parse_clock("7:05"), (7, 5))

    def test_parse_clock_never_raises(self):
        self.assertEqual(parse_clock("xx:15"), (0, 15))
        self.assertEqual(parse_clock("22"), (22, 0))
        self.assertEqual(parse_clock(""), (0, 0))
        self.assertEqual(parse_clock(None), (0, 0))
        self.assertEqual(parse_clock("99:99"), (23, 59))

    def test_is_valid_clock(self):
        self.assertTrue(is_valid_clock("00:00"))
        self.assertTrue(is_valid_clock("23:59"))
        self.assertFalse(is_valid_clock("24:00"))
        self.assertFalse(is_valid_clock("7am"))
        self.assertFalse(is_valid_clock(None))


class CoachReplyTests(unittest.TestCase):
    def test_extract_nested_action(self):
        text = 'Done, your goal is now 100 oz. {"action":{"type":"update_goal","params":{"daily_goal":100}}}'
        remainder, action = extract_action(text)
        self.assertEqual(remainder, "Done, your goal is now 100 oz.")
        self.assertEqual(action, {"type": "update_goal", "params": {"daily_goal": 100}})

    def test_extract_without_action(self):
        self.assertEqual(extract_action("Drink up!"), ("Drink up!", None))

    def test_extract_malformed_action(self):
        text = 'Sure {"action":{"type":"update_goal",}}'
        self.assertEqual(extract_action(text), (text, None))

    def test_sanitize_keeps_links(self):
        text = "## Tip\n**Drink** more *water*.\n\n\n\n* [Search on Amazon](https://amazon.com/s?k=bottle)"
        self.assertEqual(
            sanitize_response(text),
            "Tip\nDrink more water.\n\n- [Search on Amazon](https://amazon.com/s?k=bottle)",
        )


class SettingsRequestTests(unittest.TestCase):
    def test_goal(self):
        self.assertEqual(
            parse_settings_request("Please set my goal to 100"),
            {"type": "update_goal", "params": {"daily_goal": 100.0}},
        )

    def test_add_water(self):
        self.assertEqual(
            parse_settings_request("I drank 12 oz of tea"),
            {"type": "add_water", "params": {"amount": 12.0, "drink_type": "Tea"}},
        )

    def test_interval(self):
        self.assertEqual(
            parse_settings_request("make my interval 45 minutes"),
            {"type": "update_interval", "params": {"interval_length": 45}},
        )

    def test_schedule(self):
        self.assertEqual(
            parse_settings_request("I wake up at 6:30 and go to bed at 23:00"),
            {"type": "update_schedule", "params": {"wake_time": "06:30", "sleep_time": "23:00"}},
        )

    def test_theme(self):
        self.assertEqual(
            parse_settings_request("switch to the ocean theme"),
            {"type": "update_theme", "params": {"theme": "ocean"}},
        )

    def test_question_is_not_a_request(self):
        self.assertIsNone(parse_settings_request("How am I doing on my goal?"))


class FallbackTipTests(unittest.TestCase):
    def test_goal_met(self):
        self.assertIn("hit your goal", pick_fallback_tip(True, 0, 5, "oz"))

    def test_nothing_logged(self):
        self.assertIn("Start with a glass", pick_fallback_tip(True, 80, 0, "oz"))

    def test_behind(self):
        self.assertIn("240 ml", pick_fallback_tip(False, 1000, 2, "ml"))


if __name__ == "__main__":
    unittest.main()
