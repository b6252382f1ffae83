"""Run the knative-operator-local command line tool."""

from knative_operator.tool.main import main

if __name__ == "__main__":
    main()
