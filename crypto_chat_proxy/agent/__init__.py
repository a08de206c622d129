"""Chat session state, completion gateway and request pipeline."""
