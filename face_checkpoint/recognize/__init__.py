"""Recognition building blocks and the detection loop that drives them."""
