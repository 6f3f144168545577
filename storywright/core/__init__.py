"""Core configuration, errors and logging for Storywright."""
