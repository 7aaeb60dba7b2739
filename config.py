# config.py
# Default numeric tolerances, caps and display settings.
# Every solver takes these as keyword arguments, so a single problem can override them.

# Tolerances
FEASIBILITY_TOL = 1e-9    # optimality, feasibility and integrality checks
PIVOT_TOL = 1e-12         # a pivot element must be larger than this in magnitude
CONSISTENCY_TOL = 1e-6    # B^-1 reconstruction vs. the solved tableau
CLEANUP_TOL = 1e-15       # entries below this are snapped to zero after a pivot
SINGULAR_TOL = 1e-10      # Gauss-Jordan swaps rows below this pivot size

# Safety caps
MAX_ITERATIONS = 1000     # pivots per solve
MAX_NODES = 10000         # branch & bound sub-problems
MAX_CUTS = 50             # cutting-plane rounds

# Display
FRACTION_DIGITS = 3
DISPLAY_DECIMALS = 3
