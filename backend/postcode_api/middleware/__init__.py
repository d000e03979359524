"""Cross-cutting pipeline stages, assembled in order by postcode_api.pipeline."""
