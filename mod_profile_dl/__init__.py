"""Resolve and download Minecraft mods from Modrinth, GitHub and CurseForge into profiles."""

__version__ = "0.1.0"
