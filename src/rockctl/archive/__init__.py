"""newc CPIO encoding, archive reading and the image builder."""
