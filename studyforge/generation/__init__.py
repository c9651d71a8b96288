# Extraction, corpus assembly, generative calls and artifact persistence
