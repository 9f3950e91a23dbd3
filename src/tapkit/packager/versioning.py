"""
Semantic versions, version specifiers and the binary compatibility rule used
when matching modules against references.
"""

from collections.abc import Callable
import enum
import re
from typing import ClassVar, Self

from attrs import define, evolve, field

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>\d+)\.(?P<minor>\d+)(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre_release>[0-9A-Za-z\-.]+))?"
    r"(?:\+(?P<build_metadata>[0-9A-Za-z\-.]+))?$"
)
_SPECIFIER_PATTERN = re.compile(
    r"^(?P<compatible>\^)?"
    r"(?:(?P<major>\d+)(?:\.(?P<minor>\d+)(?:\.(?P<patch>\d+))?)?)?"
    r"(?:-(?P<pre_release>[0-9A-Za-z\-.]+))?"
    r"(?:\+(?P<build_metadata>[0-9A-Za-z\-.]+))?$"
)
_PRE_RELEASE_PATTERN = re.compile(r"^[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*$")


def _non_negative(instance: object, attribute: object, value: int) -> None:
    if value < 0:
        raise ValueError(f"Version components must be non-negative, got {value}.")


def is_valid_pre_release(tag: str) -> bool:
    """Dot separated identifiers made of letters, digits and hyphens."""
    return bool(_PRE_RELEASE_PATTERN.match(tag))


def _compare_identifiers(left: str, right: str) -> int:
    if left.isdigit() and right.isdigit():
        return (int(left) > int(right)) - (int(left) < int(right))
    if left.isdigit():
        return -1
    if right.isdigit():
        return 1
    return (left > right) - (left < right)


def compare_pre_release(left: str | None, right: str | None) -> int:
    """Orders pre-release tags the SemVer way. No tag ranks above any tag."""
    if left == right:
        return 0
    if left is None:
        return 1
    if right is None:
        return -1
    left_ids, right_ids = left.split("."), right.split(".")
    for a, b in zip(left_ids, right_ids):
        result = _compare_identifiers(a, b)
        if result:
            return result
    return (len(left_ids) > len(right_ids)) - (len(left_ids) < len(right_ids))


@define(frozen=True, slots=True)
class SemanticVersion:
    major: int = field(validator=_non_negative)
    minor: int = field(validator=_non_negative)
    patch: int = field(default=0, validator=_non_negative)
    pre_release: str | None = None
    build_metadata: str | None = None

    @classmethod
    def parse(cls, text: str) -> Self:
        """Parses MAJOR.MINOR[.PATCH][-PRERELEASE][+BUILD]."""
        match = _SEMVER_PATTERN.match(text.strip())
        if not match:
            raise ValueError(f"'{text}' is not a valid semantic version.")
        return cls(
            major=int(match["major"]),
            minor=int(match["minor"]),
            patch=int(match["patch"] or 0),
            pre_release=match["pre_release"],
            build_metadata=match["build_metadata"],
        )

    @classmethod
    def try_parse(cls, text: str | None) -> Self | None:
        if text is None:
            return None
        try:
            return cls.parse(text)
        except ValueError:
            return None

    def with_pre_release(self, tag: str | None) -> Self:
        return evolve(self, pre_release=tag or None)

    def to_string(self, field_count: int = 5) -> str:
        """Formats the first `field_count` parts (3 = MAJOR.MINOR.PATCH)."""
        text = f"{self.major}.{self.minor}.{self.patch}"
        if field_count >= 4 and self.pre_release:
            text += f"-{self.pre_release}"
        if field_count >= 5 and self.build_metadata:
            text += f"+{self.build_metadata}"
        return text

    def __str__(self) -> str:
        return self.to_string()

    def _key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: "SemanticVersion") -> bool:
        return self._key() < other._key()

    def __le__(self, other: "SemanticVersion") -> bool:
        return self._key() <= other._key()

    def __gt__(self, other: "SemanticVersion") -> bool:
        return self._key() > other._key()

    def __ge__(self, other: "SemanticVersion") -> bool:
        return self._key() >= other._key()


def convert_four_value(text: str) -> SemanticVersion:
    """Legacy x.y.z.w numbers become x.y.z+w."""
    parts = text.strip().split(".")
    if len(parts) != 4 or not all(p.isdigit() for p in parts):
        raise ValueError(f"'{text}' is not a four value version number.")
    return SemanticVersion(
        int(parts[0]), int(parts[1]), int(parts[2]), build_metadata=parts[3]
    )


LEGACY_CONVERTERS: list[Callable[[str], SemanticVersion]] = [convert_four_value]


def parse_version(text: str) -> SemanticVersion:
    """Parses a semantic version, falling back to the legacy converters."""
    version = SemanticVersion.try_parse(text)
    if version is not None:
        return version
    for converter in LEGACY_CONVERTERS:
        try:
            return converter(text)
        except ValueError:
            continue
    raise ValueError(f"'{text}' is not a valid version number.")


def compatible(searched: SemanticVersion | None, referenced: SemanticVersion) -> bool:
    """True if a module at version `searched` can stand in for `referenced`."""
    if searched is None:
        return True
    return searched.major == referenced.major and searched.minor >= referenced.minor


class MatchBehavior(enum.Flag):
    EXACT = 1
    COMPATIBLE = 2
    ANY_PRERELEASE = 4


@define(frozen=True, slots=True)
class VersionSpecifier:
    """A predicate over versions. Unset parts match anything."""

    ANY: ClassVar["VersionSpecifier"]

    major: int | None = None
    minor: int | None = None
    patch: int | None = None
    pre_release: str | None = None
    build_metadata: str | None = None
    match_behavior: MatchBehavior = MatchBehavior.EXACT

    def __attrs_post_init__(self) -> None:
        if self.major is None and self.minor is not None:
            raise ValueError("A minor version requires a major version.")
        if self.minor is None and self.patch is not None:
            raise ValueError("A patch version requires a minor version.")

    @classmethod
    def compatible(cls, version: SemanticVersion) -> Self:
        return cls(
            version.major,
            version.minor,
            version.patch,
            version.pre_release,
            version.build_metadata,
            MatchBehavior.COMPATIBLE,
        )

    @classmethod
    def exact(cls, version: SemanticVersion) -> Self:
        return cls(
            version.major,
            version.minor,
            version.patch,
            version.pre_release,
            version.build_metadata,
            MatchBehavior.EXACT,
        )

    @classmethod
    def parse(cls, text: str) -> "VersionSpecifier":
        text = text.strip()
        if text.lower() == "any":
            return cls.ANY
        match = _SPECIFIER_PATTERN.match(text)
        if not match or text in ("", "^"):
            raise ValueError(f"The string '{text}' is not a valid version specifier.")

        def number(name: str) -> int | None:
            return int(match[name]) if match[name] is not None else None

        return cls(
            number("major"),
            number("minor"),
            number("patch"),
            match["pre_release"],
            match["build_metadata"],
            MatchBehavior.COMPATIBLE if match["compatible"] else MatchBehavior.EXACT,
        )

    @property
    def is_any(self) -> bool:
        return self == VersionSpecifier.ANY

    def is_compatible(self, actual: SemanticVersion | None) -> bool:
        if self.is_any:
            return True
        if self.match_behavior == MatchBehavior.EXACT:
            return self._match_exact(actual)
        if MatchBehavior.COMPATIBLE in self.match_behavior:
            return self._match_compatible(actual)
        return False

    def _match_exact(self, actual: SemanticVersion | None) -> bool:
        if actual is None:
            return False
        if self.major is not None and self.major != actual.major:
            return False
        if self.minor is not None and self.minor != actual.minor:
            return False
        if self.patch is not None and self.patch != actual.patch:
            return False
        if self.pre_release != actual.pre_release:
            if self.pre_release is None or actual.pre_release is None:
                return False
            wanted = self.pre_release.split(".")
            found = actual.pre_release.split(".")
            if found[: len(wanted)] != wanted:
                return False
        if self.build_metadata and self.build_metadata != actual.build_metadata:
            return False
        return True

    def _match_compatible(self, actual: SemanticVersion | None) -> bool:
        if actual is None:
            return True
        if self.major is not None and self.major != actual.major:
            return False
        if self.minor is not None:
            if self.minor > actual.minor:
                return False
            if (
                self.minor == actual.minor
                and self.patch is not None
                and self.patch > actual.patch
            ):
                return False

        if MatchBehavior.ANY_PRERELEASE in self.match_behavior:
            return True

        # ^1.0.0 accepts 1.0.1-beta and 1.1.0-beta, but not 1.0.0-beta.
        if self.pre_release is None and actual.pre_release is not None:
            if self.minor is not None and self.minor < actual.minor:
                return True
            if (
                self.minor is not None
                and self.minor == actual.minor
                and self.patch is not None
                and self.patch < actual.patch
            ):
                return True

        return compare_pre_release(self.pre_release, actual.pre_release) <= 0

    def __str__(self) -> str:
        if self.is_any:
            return "Any"
        text = "^" if MatchBehavior.COMPATIBLE in self.match_behavior else ""
        text += ".".join(
            str(part) for part in (self.major, self.minor, self.patch) if part is not None
        )
        if self.pre_release:
            text += f"-{self.pre_release}" if text.strip("^") else self.pre_release
        if self.build_metadata:
            text += f"+{self.build_metadata}"
        return text


VersionSpecifier.ANY = VersionSpecifier(
    match_behavior=MatchBehavior.COMPATIBLE | MatchBehavior.ANY_PRERELEASE
)
