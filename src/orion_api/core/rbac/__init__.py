"""Role normalisation and capability predicates."""
