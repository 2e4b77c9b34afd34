"""Writing composite captures to disk: file naming and sidecar metadata."""
