"""Context collaborators for a release run.

These modules fetch data from outside the process (git clones, the
GitHub API) and hand it to the analysis core as plain schema objects.
"""
