"""HTTP blueprints for sitebackup."""
