"""Release domain: tools, versions, build jobs, artifacts and releases."""
