"""Engine-backed position analysis and retrospective game review."""
