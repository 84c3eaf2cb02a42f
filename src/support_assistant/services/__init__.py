"""Infrastructure services: storage, retrieval and AI collaborators."""
