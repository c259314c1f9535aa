"""Release Announcer.

Collects the changes merged into a primary repository and its dependency
repository between two releases, resolves the release's upgrade priority
from change labels, and publishes the resulting release notes as a draft
release with a chat notification.
"""

__version__ = "0.1.0"
