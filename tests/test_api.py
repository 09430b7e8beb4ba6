"""
Unit tests for the Blue Balance API.

These tests use Python's built-in `unittest` framework. The asynchronous
endpoints are exercised via `httpx.AsyncClient` and
`unittest.IsolatedAsyncioTestCase`, with a fresh in-memory repository
injected for every test. Metric requests pass an explicit `now` so the
results do not depend on when the suite runs.
"""

import os
import unittest
from unittest import mock

import httpx

from blue_balance.main import app, get_repo
from blue_balance.repository import InMemoryRepository

NOW = "2026-03-10T15:00:00"


def completion(content, status_code=200):
    return httpx.Response(
        status_code,
        json={"choices": [{"message": {"content": content}}]},
        request=httpx.Request("POST", "https://coach.test/v1/chat/completions"),
    )


class BlueBalanceApiTests(unittest.IsolatedAsyncioTestCase):
    """Test suite for the Blue Balance API."""

    async def asyncSetUp(self):
        # Override repository with in-memory instance for each test
        self.repo = InMemoryRepository()
        app.dependency_overrides[get_repo] = lambda: self.repo
        # Use ASGITransport to run the app in memory without network calls
        transport = httpx.ASGITransport(app=app)
        self.client = httpx.AsyncClient(transport=transport, base_url="http://test")
        self.env = mock.patch.dict(os.environ, {}, clear=False)
        self.env.start()
        os.environ.pop("OPENAI_API_KEY", None)

    async def asyncTearDown(self):
        # Clear overrides and close client
        self.env.stop()
        app.dependency_overrides.clear()
        await self.client.aclose()

    async def create_profile(self, **fields):
        payload = {"username": "sam", "daily_goal": 80, "wake_time": "07:00", "sleep_time": "23:00"}
        payload.update(fields)
        resp = await self.client.post("/profiles", json=payload)
        self.assertEqual(resp.status_code, 200)
        return resp.json()

    async def log(self, profile_id, amount, logged_at, **fields):
        payload = {"amount": amount, "logged_at": logged_at}
        payload.update(fields)
        resp = await self.client.post(f"/profiles/{profile_id}/logs", json=payload)
        self.assertEqual(resp.status_code, 200)
        return resp.json()

    async def test_create_and_list_profiles(self):
        profile = await self.create_profile()
        self.assertEqual(profile["unit_preference"], "oz")
        self.assertEqual(profile["interval_length"], 60)
        resp = await self.client.get("/profiles")
        profiles = resp.json()
        self.assertEqual(len(profiles), 1)
        self.assertEqual(profiles[0]["id"], profile["id"])
        # Default beverages are seeded in the profile's unit
        resp = await self.client.get(f"/profiles/{profile['id']}/beverages")
        beverages = resp.json()
        self.assertEqual(len(beverages), 7)
        self.assertEqual(beverages[0]["name"], "Water")
        self.assertEqual(beverages[0]["serving_size"], 8)
        self.assertTrue(all(b["is_default"] for b in beverages))

    async def test_invalid_profile_rejected(self):
        resp = await self.client.post("/profiles", json={"wake_time": "25:00"})
        self.assertEqual(resp.status_code, 422)
        resp = await self.client.post("/profiles", json={"daily_goal": 0})
        self.assertEqual(resp.status_code, 422)

    async def test_update_profile(self):
        profile = await self.create_profile()
        resp = await self.client.patch(f"/profiles/{profile['id']}", json={"daily_goal": 100, "sleep_time": "01:00"})
        self.assertEqual(resp.status_code, 200)
        updated = resp.json()
        self.assertEqual(updated["daily_goal"], 100)
        self.assertEqual(updated["sleep_time"], "01:00")
        self.assertEqual(updated["wake_time"], "07:00")

    async def test_unknown_profile_is_404(self):
        resp = await self.client.get("/profiles/missing/progress", params={"now": NOW})
        self.assertEqual(resp.status_code, 404)
        resp = await self.client.post("/profiles/missing/logs", json={"amount": 8})
        self.assertEqual(resp.status_code, 404)
        resp = await self.client.delete("/logs/missing")
        self.assertEqual(resp.status_code, 404)

    async def test_log_applies_hydration_factor(self):
        profile = await self.create_profile()
        entry = await self.log(profile["id"], 12, "2026-03-10T10:00:00", drink_type="Soda", hydration_factor=0.5)
        self.assertEqual(entry["amount"], 6)
        self.assertEqual(entry["drink_type"], "Soda")

    async def test_progress_snapshot(self):
        profile = await self.create_profile()
        await self.log(profile["id"], 40, "2026-03-10T10:00:00", hydration_factor=0.95)
        resp = await self.client.get(f"/profiles/{profile['id']}/progress", params={"now": NOW})
        self.assertEqual(resp.status_code, 200)
        snapshot = resp.json()
        self.assertAlmostEqual(snapshot["current_intake"], 38)
        self.assertAlmostEqual(snapshot["expected_intake"], 40)
        self.assertAlmostEqual(snapshot["expected_range"]["min"], 36)
        self.assertAlmostEqual(snapshot["expected_range"]["max"], 44)
        self.assertTrue(snapshot["on_track"])
        self.assertEqual(snapshot["interval"]["interval_index"], 8)
        self.assertEqual(snapshot["interval"]["total_intervals"], 16)
        self.assertEqual(snapshot["time_remaining_hours"], 8)

    async def test_behind_schedule(self):
        profile = await self.create_profile()
        await self.log(profile["id"], 30, "2026-03-10T10:00:00")
        resp = await self.client.get(f"/profiles/{profile['id']}/progress", params={"now": NOW})
        self.assertFalse(resp.json()["on_track"])

    async def test_interval_endpoint(self):
        profile = await self.create_profile(daily_goal=75, sleep_time="22:00")
        await self.log(profile["id"], 5, "2026-03-10T07:10:00")
        resp = await self.client.get(f"/profiles/{profile['id']}/interval", params={"now": "2026-03-10T07:30:00"})
        interval = resp.json()
        self.assertEqual(interval["total_intervals"], 15)
        self.assertEqual(interval["interval_index"], 0)
        self.assertAlmostEqual(interval["target_amount"], 5)
        self.assertEqual(interval["current_amount"], 5)
        self.assertTrue(interval["complete"])

    async def test_filtered_logs_and_undo(self):
        profile = await self.create_profile()
        pid = profile["id"]
        await self.log(pid, 8, "2026-03-09T23:59:00")
        await self.log(pid, 10, "2026-03-10T08:00:00")
        await self.log(pid, 12, "2026-03-10T14:30:00")

        resp = await self.client.get(f"/profiles/{pid}/logs", params={"filter": "day", "now": NOW})
        body = resp.json()
        self.assertEqual([log["amount"] for log in body["logs"]], [12, 10])
        self.assertEqual(body["total"], 22)

        resp = await self.client.get(f"/profiles/{pid}/logs", params={"filter": "hour", "now": NOW})
        self.assertEqual([log["amount"] for log in resp.json()["logs"]], [12])

        resp = await self.client.get(
            f"/profiles/{pid}/logs",
            params={"filter": "custom", "start": "2026-03-09T00:00:00", "end": "2026-03-10T08:00:00", "now": NOW},
        )
        self.assertEqual([log["amount"] for log in resp.json()["logs"]], [10, 8])

        # Undo removes the newest entry from today only
        resp = await self.client.post(f"/profiles/{pid}/logs/undo", params={"now": NOW})
        self.assertEqual(resp.json()["amount"], 12)
        await self.client.post(f"/profiles/{pid}/logs/undo", params={"now": NOW})
        resp = await self.client.post(f"/profiles/{pid}/logs/undo", params={"now": NOW})
        self.assertIsNone(resp.json())
        resp = await self.client.get(f"/profiles/{pid}/logs", params={"filter": "week", "now": NOW})
        self.assertEqual([log["amount"] for log in resp.json()["logs"]], [8])

    async def test_delete_log(self):
        profile = await self.create_profile()
        entry = await self.log(profile["id"], 8, "2026-03-10T09:00:00")
        resp = await self.client.delete(f"/logs/{entry['id']}")
        self.assertEqual(resp.status_code, 204)
        resp = await self.client.get(f"/profiles/{profile['id']}/logs", params={"now": NOW})
        self.assertEqual(resp.json()["logs"], [])

    async def test_streak_score_split_history(self):
        profile = await self.create_profile(daily_goal=64)
        pid = profile["id"]
        for day in (7, 8, 9):
            await self.log(pid, 64, f"2026-03-{day:02d}T12:00:00")
        await self.log(pid, 10, "2026-03-10T09:00:00", drink_type="Coffee")

        resp = await self.client.get(f"/profiles/{pid}/streak", params={"now": NOW})
        self.assertEqual(resp.json()["streak"], 3)

        resp = await self.client.get(f"/profiles/{pid}/score", params={"now": NOW})
        score = resp.json()
        self.assertTrue(0 <= score["score"] <= 100)
        self.assertIn(score["label"], ("Excellent", "Good", "Moderate", "Imbalanced", "Off Track"))

        resp = await self.client.get(f"/profiles/{pid}/split", params={"filter": "week", "now": NOW})
        split = resp.json()
        self.assertEqual(split[0]["name"], "Water")
        self.assertEqual(split[1]["name"], "Coffee")

        resp = await self.client.get(f"/profiles/{pid}/history", params={"days": 4, "now": NOW})
        history = resp.json()
        self.assertEqual([d["date"] for d in history], ["2026-03-07", "2026-03-08", "2026-03-09", "2026-03-10"])
        self.assertEqual([d["goal_met"] for d in history], [True, True, True, False])

    async def test_convert_and_recommend(self):
        resp = await self.client.get("/convert", params={"amount": 8, "from_unit": "oz", "to_unit": "ml"})
        self.assertAlmostEqual(resp.json()["result"], 236.588)
        resp = await self.client.get("/convert", params={"amount": 8, "from_unit": "oz", "to_unit": "cups"})
        self.assertEqual(resp.status_code, 422)
        resp = await self.client.post("/goal/recommend", json={"sex": "male", "unit_preference": "ml"})
        self.assertEqual(resp.json()["daily_goal"], 3700)

    async def test_coach_fallback_without_api_key(self):
        """Without an API key the heuristic coach answers and may return an action."""
        profile = await self.create_profile()
        pid = profile["id"]
        resp = await self.client.post(f"/profiles/{pid}/coach", params={"now": NOW}, json={"message": "set my goal to 100"})
        self.assertEqual(resp.status_code, 200)
        reply = resp.json()
        self.assertEqual(reply["action"], {"type": "update_goal", "params": {"daily_goal": 100.0}})
        # The action is returned, not applied
        resp = await self.client.get(f"/profiles/{pid}")
        self.assertEqual(resp.json()["daily_goal"], 80)

        resp = await self.client.post(f"/profiles/{pid}/coach", params={"now": NOW}, json={"message": "what's my streak?"})
        self.assertIn("streak is 0 days", resp.json()["response"])

        resp = await self.client.get(f"/profiles/{pid}/chat")
        roles = [m["role"] for m in resp.json()]
        self.assertEqual(roles, ["user", "assistant", "user", "assistant"])
        resp = await self.client.delete(f"/profiles/{pid}/chat")
        self.assertEqual(resp.status_code, 204)
        resp = await self.client.get(f"/profiles/{pid}/chat")
        self.assertEqual(resp.json(), [])

    async def test_coach_parses_model_reply(self):
        profile = await self.create_profile()
        os.environ["OPENAI_API_KEY"] = "test-key"
        content = '**Done!** Your goal is now 100 oz. {"action":{"type":"update_goal","params":{"daily_goal":100}}}'
        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=completion(content))) as call:
            resp = await self.client.post(
                f"/profiles/{profile['id']}/coach", params={"now": NOW}, json={"message": "raise my goal to 100"}
            )
        reply = resp.json()
        self.assertEqual(reply["response"], "Done! Your goal is now 100 oz.")
        self.assertEqual(reply["action"], {"type": "update_goal", "params": {"daily_goal": 100}})
        messages = call.await_args.args[0]
        self.assertEqual(messages[0]["role"], "system")
        self.assertIn("Daily Goal: 80 oz", messages[0]["content"])
        self.assertEqual(messages[-1], {"role": "user", "content": "raise my goal to 100"})

    async def test_coach_drops_unknown_action(self):
        profile = await self.create_profile()
        os.environ["OPENAI_API_KEY"] = "test-key"
        content = 'Sure. {"action":{"type":"order_pizza","params":{}}}'
        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=completion(content))):
            resp = await self.client.post(f"/profiles/{profile['id']}/coach", params={"now": NOW}, json={"message": "hi"})
        self.assertEqual(resp.json()["response"], "Sure.")
        self.assertIsNone(resp.json()["action"])

    async def test_coach_rate_limited(self):
        profile = await self.create_profile()
        os.environ["OPENAI_API_KEY"] = "test-key"
        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=completion("", 429))):
            resp = await self.client.post(f"/profiles/{profile['id']}/coach", params={"now": NOW}, json={"message": "hi"})
        self.assertEqual(resp.json()["error"], "rate_limited")

    async def test_coach_falls_back_on_transport_error(self):
        profile = await self.create_profile()
        os.environ["OPENAI_API_KEY"] = "test-key"
        failure = mock.AsyncMock(side_effect=httpx.ConnectError("unreachable"))
        with mock.patch("blue_balance.agents._chat_completion", failure):
            resp = await self.client.post(f"/profiles/{profile['id']}/coach", params={"now": NOW}, json={"message": "how am I doing?"})
        reply = resp.json()
        self.assertEqual(resp.status_code, 200)
        self.assertIn("behind", reply["response"])
        self.assertEqual(reply["error"], "unreachable")

    async def test_coach_falls_back_on_structured_content(self):
        profile = await self.create_profile()
        os.environ["OPENAI_API_KEY"] = "test-key"
        reply = completion([{"type": "text", "text": "hi"}])
        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=reply)):
            resp = await self.client.post(f"/profiles/{profile['id']}/coach", params={"now": NOW}, json={"message": "how am I doing?"})
        self.assertEqual(resp.status_code, 200)
        self.assertIn("behind", resp.json()["response"])
        self.assertEqual(resp.json()["error"], "unexpected completion content")

        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=reply)):
            resp = await self.client.get(f"/profiles/{profile['id']}/tip", params={"now": NOW})
        self.assertEqual(resp.status_code, 200)
        self.assertIn("Start with a glass", resp.json()["tip"])

    async def test_tip(self):
        profile = await self.create_profile()
        resp = await self.client.get(f"/profiles/{profile['id']}/tip", params={"now": NOW})
        self.assertIn("Start with a glass", resp.json()["tip"])
        os.environ["OPENAI_API_KEY"] = "test-key"
        reply = completion("Keep a bottle on your desk.")
        with mock.patch("blue_balance.agents._chat_completion", mock.AsyncMock(return_value=reply)):
            resp = await self.client.get(f"/profiles/{profile['id']}/tip", params={"now": NOW})
        self.assertEqual(resp.json()["tip"], "Keep a bottle on your desk.")


if __name__ == "__main__":
    unittest.main()
