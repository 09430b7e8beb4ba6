"""Blue Balance: time-aware hydration pacing, tracking and coaching."""
