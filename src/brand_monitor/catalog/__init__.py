"""Source-of-truth catalog: scopes, tracked prompts and competitors."""
