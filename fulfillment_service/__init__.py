"""Order fulfillment service: order submission, queueing and processing."""
