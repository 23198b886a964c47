"""Video module: upload orchestration, status lifecycle and playback URLs."""
