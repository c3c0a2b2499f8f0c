"""Pipeline stages: chunking, scheduling, salvage, quality gate, fallback and merge."""
