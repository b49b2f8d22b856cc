"""Reference, artifact and registry client primitives."""
