"""directory/ -- Client for the remote learning-management directory (Moodle).

Layer rule: directory/ imports only core/ and third-party libraries.
auth/ and api/ import from directory/, not the other way around.
"""
