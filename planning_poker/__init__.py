"""Planning poker estimation sessions for chat rooms."""
