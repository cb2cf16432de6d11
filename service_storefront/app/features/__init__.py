"""Home page feature images."""
