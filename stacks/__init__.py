"""CDK stacks for the tiered server, event pipeline and web ACL."""
