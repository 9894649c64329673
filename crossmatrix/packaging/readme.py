"""Per-target README generation.

Renders ``templates/README.md.j2`` with the target's display metadata and
the literal runtime recommendations of its runtime class.
"""

from __future__ import annotations

from collections.abc import Iterable

from jinja2 import Environment, PackageLoader, StrictUndefined

from crossmatrix.profiles.schema import (
    ProjectSchema,
    RuntimeRecommendationSchema,
    TargetProfileSchema,
)

README_TEMPLATE = "README.md.j2"

_env = Environment(
    loader=PackageLoader("crossmatrix.packaging", "templates"),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def readme_name(profile: TargetProfileSchema) -> str:
    """File name of a target's README."""
    return f"README-{profile.id}.md"


def recommendation_for(
    project: ProjectSchema, profile: TargetProfileSchema
) -> RuntimeRecommendationSchema | None:
    """Runtime recommendation for a target's runtime class, if declared."""
    return project.runtime_recommendations.get(profile.runtime_class)


def render_readme(
    project: ProjectSchema,
    profile: TargetProfileSchema,
    contents: Iterable[str] = (),
    secondary: str | None = None,
) -> str:
    """Render the README for one target bundle.

    Args:
        project: Project description.
        profile: Target profile.
        contents: File names included in the bundle.
        secondary: Name of the bundled secondary binary, if any.

    Returns:
        README text (Markdown).
    """
    template = _env.get_template(README_TEMPLATE)
    return template.render(
        project=project,
        profile=profile,
        recommendation=recommendation_for(project, profile),
        secondary=secondary,
        contents=sorted(contents),
    )


__all__ = ["readme_name", "recommendation_for", "render_readme"]
