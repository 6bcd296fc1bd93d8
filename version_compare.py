"""
Version Compare
Parses and orders the version strings addon authors actually publish

Handles:
- Semantic versions: "1.2.3", "1.2.3-beta"
- Prefixed versions: "v1.2.3", "r32"
- Short versions: "1.2", "1"
- Date versions: "2024.01.15"
- Branch versions: "main-latest" (always older than any real version)
"""

BRANCH_SUFFIX = '-latest'
BRANCH_MARKER = '-branch'
VERSION_PREFIXES = ('v', 'V', 'r', 'R')


class Version:
    def __init__(self, components=None, prerelease=None, original='', is_branch=False):
        """Initialize a parsed version.

        Args:
            components: list - Numeric components, e.g. [1, 2, 3]
            prerelease: Optional str - Prerelease tag, e.g. 'beta'
            original: str - String the version was parsed from, kept for display
            is_branch: bool - True when the version tracks a moving branch
        """
        self.components = list(components or [])
        self.prerelease = prerelease
        self.original = original
        self.is_branch = is_branch

    @classmethod
    def parse(cls, text):
        """Parse a version string.

        Never fails: components that are not numbers are dropped, so
        "1.x.3" parses as [1, 3].

        Args:
            text: str - Version string as published

        Returns:
            Version - Parsed version
        """
        original = text if text is not None else ''
        trimmed = original.strip()

        if trimmed.endswith(BRANCH_SUFFIX) or BRANCH_MARKER in trimmed:
            return cls([], None, original, is_branch=True)

        cleaned = trimmed
        if cleaned[:1] in VERSION_PREFIXES:
            cleaned = cleaned[1:]

        # Build metadata never affects ordering
        cleaned = cleaned.split('+', 1)[0]

        prerelease = None
        if '-' in cleaned:
            cleaned, prerelease = cleaned.split('-', 1)

        components = []
        for part in cleaned.split('.'):
            if part.isascii() and part.isdigit():
                components.append(int(part))

        return cls(components, prerelease, original)

    def _compare(self, other):
        if self.is_branch or other.is_branch:
            if self.is_branch and other.is_branch:
                return 0
            return -1 if self.is_branch else 1

        length = max(len(self.components), len(other.components))
        for index in range(length):
            a = self.components[index] if index < len(self.components) else 0
            b = other.components[index] if index < len(other.components) else 0
            if a != b:
                return -1 if a < b else 1

        # A stable release outranks any prerelease of the same numbers
        if self.prerelease is None and other.prerelease is None:
            return 0
        if self.prerelease is None:
            return 1
        if other.prerelease is None:
            return -1
        if self.prerelease == other.prerelease:
            return 0
        return -1 if self.prerelease < other.prerelease else 1

    def is_newer_than(self, other):
        return self._compare(other) > 0

    def normalized(self):
        """Return the canonical display form ("v1.2.3" -> "1.2.3")."""
        if self.is_branch or not self.components:
            return self.original
        base = '.'.join(str(n) for n in self.components)
        if self.prerelease is not None:
            return f"{base}-{self.prerelease}"
        return base

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) == 0

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) < 0

    def __le__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) <= 0

    def __gt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) > 0

    def __ge__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) >= 0

    def __hash__(self):
        if self.is_branch:
            return hash(('branch',))
        # Trailing zeros do not change the rank: "1.2" == "1.2.0"
        components = list(self.components)
        while components and components[-1] == 0:
            components.pop()
        return hash((tuple(components), self.prerelease))

    def __repr__(self):
        return f"Version({self.original!r})"

    def __str__(self):
        return self.original


def parse_version(text):
    return Version.parse(text)


def compare_versions(a, b):
    """Compare two version strings.

    Args:
        a: str - First version
        b: str - Second version

    Returns:
        int - -1 if a < b, 0 if equal, 1 if a > b
    """
    return Version.parse(a)._compare(Version.parse(b))


def is_update_available(installed, available):
    """Check whether ``available`` is an update over ``installed``.

    A branch install ("main-latest") reports an update for any real version.

    Args:
        installed: str - Currently installed version string
        available: str - Candidate version string

    Returns:
        bool - True if the candidate ranks strictly higher
    """
    return Version.parse(available).is_newer_than(Version.parse(installed))


def normalize_version(version):
    return Version.parse(version).normalized()
