"""Tar archive layout of docker-save images."""
