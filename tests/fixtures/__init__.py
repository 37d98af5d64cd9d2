"""Shared test helpers: fakes and export builders."""
