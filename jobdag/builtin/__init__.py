"""Built-in adapters shipped with jobdag."""
