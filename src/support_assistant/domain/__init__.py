"""Domain layer: entities, value objects, policies and ports."""
