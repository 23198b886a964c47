"""Transcoding module: ffmpeg invocation, HLS segmenting and replication.

Turns an uploaded source into fixed-resolution HLS renditions, writes the
segments to every storage backend and signs playback manifests.
"""
