"""
Canvases module.

Business model canvases, customer profiles, value maps and value-proposition
canvases. Item blocks are edited under an optimistic lock on ``updated_at``;
value-proposition canvases also carry a fit score against their customer profile.
"""
