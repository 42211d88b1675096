"""Git command helpers used by the clone, plan and push stages.

Example:
    >>> from repo_fanout.git import client
    >>> await client.clone("git@github.com:org/a.git", Path("fanout/org/a/clone/repo"))
    >>> await client.head_sha(Path("fanout/org/a/clone/repo"))
"""
