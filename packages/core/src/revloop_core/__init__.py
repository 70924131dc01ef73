"""revloop core: review cycle, agent invocation and PR source providers."""
