"""StreamVault: HLS transcoding and signed playback delivery."""

__version__ = "0.1.0"
