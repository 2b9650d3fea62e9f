from commit2base.core import main

if __name__ == "__main__":
    main()
