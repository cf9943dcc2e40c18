"""Depot backends.

:class:`~p4publish.backends.git.GitDepot` keeps a depot in a local bare git
repository.  :class:`~p4publish.backends.perforce.PerforceDepot` talks to a
Perforce server and needs the ``p4`` extra; import it from its module.
"""

from .git import FileRevision, GitDepot

__all__ = ["GitDepot", "FileRevision"]
