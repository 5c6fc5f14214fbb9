"""
ProgressionTarget -- where a progression rule sends a student.

A rule's ``to_class`` is stored as a name.  Resolving it yields one of two
variants, and callers dispatch on the variant instead of comparing strings:

    ClassTarget(class_id, name)   move the student into an existing class
    Graduate(label)               terminal: alumni record, student inactive

A rule resolves to ``Graduate`` when its target equals the configured
graduation name (``"Alumni"`` by default, case-insensitive) or when no
active class with that name exists in the school.
"""

from dataclasses import dataclass
from uuid import UUID

DEFAULT_GRADUATION_TARGET = "Alumni"


@dataclass(frozen=True)
class ClassTarget:
    class_id: UUID
    name: str

    @property
    def is_graduation(self) -> bool:
        return False


@dataclass(frozen=True)
class Graduate:
    label: str = DEFAULT_GRADUATION_TARGET

    @property
    def is_graduation(self) -> bool:
        return True


ProgressionTarget = ClassTarget | Graduate


def resolve_target(
    to_class: str,
    active_classes: dict[str, UUID],
    graduation_name: str = DEFAULT_GRADUATION_TARGET,
) -> ProgressionTarget:
    """
    Resolve a rule's target name against the school's active classes.

    Args:
        to_class: Target name from the ClassProgression rule.
        active_classes: Active class name -> class id for the school.
        graduation_name: Literal name that always means graduation.
    """
    name = to_class.strip()
    if name.casefold() == graduation_name.casefold():
        return Graduate(label=graduation_name)
    class_id = active_classes.get(name)
    if class_id is None:
        return Graduate(label=name)
    return ClassTarget(class_id=class_id, name=name)
