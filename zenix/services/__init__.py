"""Service layer: catalog client, fetch-state controllers, tracked lists and recommendations."""
