"""taor: a provider-agnostic think-act-observe-repeat agent core."""

__version__ = "0.1.0"
