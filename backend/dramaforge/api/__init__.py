"""HTTP API exposing the DramaForge engine."""
