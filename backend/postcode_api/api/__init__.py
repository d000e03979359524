"""HTTP routes: health, versioned API, documentation and fallback."""
