"""Order storage, batched persistence, queue consumption, order processing and gateway authentication for a flash-sale mall."""

__version__ = "0.1.0"