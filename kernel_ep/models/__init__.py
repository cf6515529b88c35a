"""
Toy models, each with its own fixed-schedule EP loop (or, for the
multinomial model, a Laplace fit to compare against).
"""
