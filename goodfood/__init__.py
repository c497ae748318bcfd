"""GoodFood client-side tooling."""
