"""Plugins shipped with Stheno.

``page``, ``jinja`` and ``markdown`` are loaded into every environment;
``paginator`` is opt-in through the ``plugins`` config list. Each plugin
module exposes ``setup(env)``.
"""
