"""Command line tool for knative-operator-local."""
