"""Command line tool for argocd-operator."""
