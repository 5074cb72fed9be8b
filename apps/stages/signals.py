# apps/stages/signals.py
from django.dispatch import Signal

# Wysyłane po każdej zmianie lokalnego drzewa. kwargs: store
hierarchy_changed = Signal()

# Wysyłane, gdy operacja się nie powiodła. kwargs: store, error (MutationError)
mutation_failed = Signal()
