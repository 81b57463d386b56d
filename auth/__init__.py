"""auth/ -- Authentication, sessions, and authorization policy for CarLot.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, inventory/, or notify/.
api/ and web/ import from auth/, not the other way around.
"""
