"""Call-rate-control decorators and the timer facility they run on.

Import the public names from :mod:`funkit`; this package keeps no eager imports
so that :mod:`funkit.models` can depend on :mod:`funkit.core.state` directly.
"""
